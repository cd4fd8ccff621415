"""HTTP client for the cluster service's clusters and upgrade policy endpoints."""

from __future__ import annotations

import logging
import os
import posixpath
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import requests

from managed_upgrade.models import (
    ClusterInfo,
    ClusterList,
    KubeClient,
    UpgradePolicyList,
    UpgradePolicyState,
    UpgradePolicyStateRequest,
)

OPERATION_ID_HEADER = "X-Operation-Id"
CLUSTERS_V1_PATH = "/api/clusters_mgmt/v1/clusters"
UPGRADEPOLICIES_V1_PATH = "upgrade_policies"
STATE_V1_PATH = "state"

_TIMEOUT = (5.0, None)

logger = logging.getLogger("ocm-client")


class OcmRequestError(RuntimeError):
    """A request to the cluster service failed or returned an error status."""


class ClusterIdNotFoundError(LookupError):
    """The cluster service did not return exactly one matching cluster."""

    def __init__(
        self,
        message: str = (
            "OCM did not return a valid cluster ID: pull-secret may be invalid "
            "OR cluster's owner is disabled/banned in OCM"
        ),
    ) -> None:
        super().__init__(message)


@dataclass(frozen=True)
class AccessToken:
    """Credentials a cluster uses to authenticate against the cluster service."""

    cluster_id: str
    pull_secret: str

    @property
    def authorization(self) -> str:
        return f"AccessToken {self.cluster_id}:{self.pull_secret}"


def _join_path(*elements: str) -> str:
    joined = "/".join(element for element in elements if element)
    return posixpath.normpath(joined) if joined else ""


def _with_path(base_url: str, path: str) -> str:
    parts = urlsplit(base_url)
    if path and parts.netloc and not path.startswith("/"):
        path = "/" + path
    return urlunsplit(parts._replace(path=path))


def _new_session() -> requests.Session:
    session = requests.Session()
    session.trust_env = False
    return session


def _perform(
    session: requests.Session, method: str, url: str, failure: str, **kwargs: Any
) -> requests.Response:
    try:
        return session.request(method, url, timeout=_TIMEOUT, **kwargs)
    except requests.RequestException as exc:
        raise OcmRequestError(f"{failure}: request to '{url}' returned error '{exc}'") from exc


def _decode(response: requests.Response, url: str) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise OcmRequestError(f"can't decode response from '{url}': {exc}") from exc


def _is_error(response: requests.Response) -> bool:
    return response.status_code > 399


def _operation_id(response: requests.Response) -> str:
    return response.headers.get(OPERATION_ID_HEADER, "")


def _external_cluster_id(cluster_version: Any) -> str:
    if isinstance(cluster_version, Mapping):
        spec = cluster_version.get("spec") or {}
        value = spec.get("clusterID") if isinstance(spec, Mapping) else None
    else:
        spec = getattr(cluster_version, "spec", None)
        value = getattr(spec, "cluster_id", None)
    return "" if value is None else str(value)


class OcmClient:
    """Talks to the cluster service on behalf of one cluster."""

    def __init__(
        self,
        kube_client: KubeClient,
        base_url: str,
        session: requests.Session | None = None,
    ) -> None:
        self.kube_client = kube_client
        self.base_url = base_url
        self.session = session if session is not None else _new_session()

    def get_cluster(self) -> ClusterInfo:
        """Look up this cluster's record by its external ID."""
        try:
            cluster_version = self.kube_client.get("ClusterVersion", "version")
        except Exception as exc:
            raise OcmRequestError(f"can't get clusterversion: {exc}") from exc
        external_id = _external_cluster_id(cluster_version)

        url = _with_path(self.base_url, _join_path(urlsplit(self.base_url).path, CLUSTERS_V1_PATH))
        response = _perform(
            self.session,
            "GET",
            url,
            "can't query OCM cluster service",
            params={"page": "1", "size": "1", "search": f"external_id = '{external_id}'"},
        )
        operation_id = _operation_id(response)
        if _is_error(response):
            raise OcmRequestError(
                f"request to '{url}' received error code {response.status_code}, "
                f"operation id '{operation_id}'"
            )
        logger.info(
            "request to '%s' received response code %s, operation id: '%s'",
            url,
            response.status_code,
            operation_id,
        )

        listing = ClusterList.from_dict(_decode(response, url))
        if listing.size != 1 or len(listing.items) != 1:
            raise ClusterIdNotFoundError()
        return listing.items[0]

    def get_cluster_upgrade_policies(self, cluster_id: str) -> UpgradePolicyList:
        """Return the upgrade policies defined for a cluster."""
        path = _join_path(urlsplit(self.base_url).path, CLUSTERS_V1_PATH, cluster_id, UPGRADEPOLICIES_V1_PATH)
        url = _with_path(self.base_url, path)
        response = _perform(
            self.session,
            "GET",
            url,
            "can't pull upgrade policies",
            params={"page": "1", "size": "1"},
        )
        operation_id = _operation_id(response)
        if _is_error(response):
            raise OcmRequestError(
                f"request to '{url}' received error code '{response.status_code}' from OCM "
                f"upgrade policy service, operation id '{operation_id}'"
            )
        logger.info(
            "request to '%s' received response code '%s' from OCM upgrade policy service, "
            "operation id: '%s'",
            url,
            response.status_code,
            operation_id,
        )
        return UpgradePolicyList.from_dict(_decode(response, url))

    def set_state(self, value: str, description: str, policy_id: str, cluster_id: str) -> None:
        """Report a new state for an upgrade policy."""
        body = UpgradePolicyStateRequest(value=value, description=description)
        path = _join_path(
            urlsplit(self.base_url).path,
            CLUSTERS_V1_PATH,
            cluster_id,
            UPGRADEPOLICIES_V1_PATH,
            policy_id,
            STATE_V1_PATH,
        )
        url = _with_path(self.base_url, path)
        response = _perform(
            self.session,
            "PATCH",
            url,
            "can't set upgrade policy state",
            json=body.to_dict(),
        )
        if _is_error(response):
            raise OcmRequestError(
                f"request to '{url}' received error code {response.status_code}, "
                f"operation id '{_operation_id(response)}'"
            )

    def get_cluster_upgrade_policy_state(self, policy_id: str, cluster_id: str) -> UpgradePolicyState:
        """Return the current state of an upgrade policy."""
        path = _join_path(
            urlsplit(self.base_url).path,
            CLUSTERS_V1_PATH,
            cluster_id,
            UPGRADEPOLICIES_V1_PATH,
            policy_id,
            STATE_V1_PATH,
        )
        url = _with_path(self.base_url, path)
        response = _perform(self.session, "GET", url, "can't pull upgrade policy state")
        if _is_error(response):
            raise OcmRequestError(
                f"received error code '{response.status_code}' from OCM upgrade policy service, "
                f"operation id '{_operation_id(response)}'"
            )
        return UpgradePolicyState.from_dict(_decode(response, url))


def get_proxy() -> str:
    """Return the HTTPS proxy configured in the environment, or an empty string."""
    return os.environ.get("HTTPS_PROXY", "")


def build_ocm_client(
    kube_client: KubeClient, base_url: str, access_token: AccessToken | None
) -> OcmClient:
    """Create a client that authenticates with the cluster's access token."""
    if access_token is None:
        raise OcmRequestError("failed to retrieve cluster access token")

    session = _new_session()
    proxy = get_proxy()
    if proxy:
        try:
            parts = urlsplit(proxy)
            parts.port  # raises ValueError on a malformed port
        except ValueError as exc:
            raise ValueError(f"invalid-formatted proxy: {exc}") from exc
        session.proxies = {"http": proxy, "https": proxy}
    session.headers["Authorization"] = access_token.authorization

    return OcmClient(kube_client, base_url, session)