"""HTTP client for the in-cluster agent that proxies the cluster service."""

from __future__ import annotations

import logging
from typing import Any

import requests

from managed_upgrade.models import (
    ClusterInfo,
    KubeClient,
    UpgradePolicy,
    UpgradePolicyList,
    UpgradePolicyState,
    UpgradePolicyStateRequest,
)
from managed_upgrade.ocm_client import (
    AccessToken,
    OcmClient,
    OcmRequestError,
    _decode,
    _is_error,
    _join_path,
    _new_session,
    _operation_id,
    _perform,
    _with_path,
    build_ocm_client,
)

OCM_AGENT_SERVICE_URL = "ocm-agent.openshift-ocm-agent-operator.svc.cluster.local"
OCM_AGENT_SERVICE_PORT = 8081
OPERATION_ID_HEADER = "X-Operation-Id"
UPGRADEPOLICIES_PATH = "upgrade_policies"
STATE_V1_PATH = "state"

logger = logging.getLogger("ocm-client")


class OcmAgentClient:
    """Talks to the in-cluster agent; it needs no credentials and no proxy."""

    def __init__(self, base_url: str, session: requests.Session | None = None) -> None:
        self.base_url = base_url
        self.session = session if session is not None else _new_session()

    def get_cluster(self) -> ClusterInfo:
        """Return this cluster's record from the agent."""
        url = _with_path(self.base_url, _join_path(_path_of(self.base_url)))
        response = _perform(self.session, "GET", url, "can't query OCM cluster service")
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
        return ClusterInfo.from_dict(_decode(response, url))

    def get_cluster_upgrade_policies(self, cluster_id: str) -> UpgradePolicyList:
        """Return the cluster's upgrade policies as a single page."""
        url = _with_path(self.base_url, _join_path(UPGRADEPOLICIES_PATH))
        response = _perform(self.session, "GET", url, "can't pull upgrade policies")
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

        payload = _decode(response, url)
        if payload is None:
            payload = []
        if not isinstance(payload, list):
            raise OcmRequestError(f"can't decode response from '{url}': expected a list of policies")
        items = [UpgradePolicy.from_dict(item) for item in payload]
        return UpgradePolicyList(
            kind="UpgradePolicyList",
            page=1,
            size=len(items),
            total=len(items),
            items=items,
        )

    def set_state(self, value: str, description: str, policy_id: str, cluster_id: str) -> None:
        """Report a new state for an upgrade policy."""
        body = UpgradePolicyStateRequest(value=value, description=description)
        url = _with_path(self.base_url, _join_path(UPGRADEPOLICIES_PATH, policy_id, STATE_V1_PATH))
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
        url = _with_path(self.base_url, _join_path(UPGRADEPOLICIES_PATH, policy_id, STATE_V1_PATH))
        response = _perform(self.session, "GET", url, "can't pull upgrade policy state")
        if _is_error(response):
            raise OcmRequestError(
                f"received error code '{response.status_code}' from OCM upgrade policy service, "
                f"operation id '{_operation_id(response)}'"
            )
        return UpgradePolicyState.from_dict(_decode(response, url))


def _path_of(url: str) -> str:
    from urllib.parse import urlsplit

    return urlsplit(url).path


def is_ocm_agent_url(url: Any) -> bool:
    """Tell whether a base URL points at the in-cluster agent service."""
    return f"{OCM_AGENT_SERVICE_URL}:{OCM_AGENT_SERVICE_PORT}" in str(url)


def select_ocm_client(
    kube_client: KubeClient, base_url: str, access_token: AccessToken | None
) -> OcmAgentClient | OcmClient:
    """Return an agent client for agent URLs, otherwise an authenticated cluster-service client."""
    if is_ocm_agent_url(base_url):
        return OcmAgentClient(base_url)
    return build_ocm_client(kube_client, base_url, access_token)