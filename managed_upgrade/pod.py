"""Filtering, deleting and finalizer removal for the pods on a node."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from managed_upgrade.models import KubeClient, Node, Pod

PodPredicate = Callable[[Pod], bool]


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of a pod deletion pass."""

    message: str
    num_marked_for_deletion: int


@dataclass(frozen=True)
class RemoveFinalizersResult:
    """Outcome of a finalizer removal pass."""

    message: str
    num_removed: int


class PodOperationError(RuntimeError):
    """One or more pods could not be processed; the partial result is attached."""

    def __init__(self, errors: Iterable[BaseException], result: Any) -> None:
        self.errors = list(errors)
        self.result = result
        detail = "; ".join(str(error) for error in self.errors)
        super().__init__(f"{len(self.errors)} error(s) occurred: {detail}")


def filter_pods(pods: Iterable[Pod], *predicates: PodPredicate) -> list[Pod]:
    """Return the pods that satisfy every predicate."""
    return [pod for pod in pods if all(predicate(pod) for predicate in predicates)]


def _qualified(pod: Pod) -> str:
    return f"{pod.metadata.namespace}/{pod.metadata.name}"


def delete_pods(
    client: KubeClient,
    logger: logging.Logger,
    pods: Iterable[Pod],
    ignore_already_deleting: bool,
    **kwargs: Any,
) -> DeleteResult:
    """Delete the pods, passing keyword options on to the client.

    Pods already being deleted are skipped when ``ignore_already_deleting`` is set.
    Raises PodOperationError, carrying the result, if any deletion fails.
    """
    errors: list[BaseException] = []
    marked: list[str] = []
    for pod in pods:
        if ignore_already_deleting and pod.metadata.deletion_timestamp is not None:
            logger.info("Ignoring deleting pod %s because it is already being deleted", pod.metadata.name)
            continue
        logger.info("Applying pod deletion drain strategy to pod %s", _qualified(pod))
        try:
            client.delete(pod, **kwargs)
        except Exception as exc:
            logger.error("failed to delete the pod %s: %s", _qualified(pod), exc)
            errors.append(exc)
        else:
            marked.append(pod.metadata.name)

    result = DeleteResult(
        message=f"Pod(s) {','.join(marked)} have been marked for deletion",
        num_marked_for_deletion=len(marked),
    )
    if errors:
        raise PodOperationError(errors, result)
    return result


def remove_finalizers_from_pods(
    client: KubeClient, logger: logging.Logger, pods: Iterable[Pod]
) -> RemoveFinalizersResult:
    """Clear the finalizers of every pod that has some and update it on the cluster.

    Raises PodOperationError, carrying the result, if any update fails.
    """
    errors: list[BaseException] = []
    removed: list[str] = []
    for pod in pods:
        if not pod.metadata.finalizers:
            continue
        logger.info("Applying remove finalizer strategy to pod %s", _qualified(pod))
        updated = copy.deepcopy(pod)
        updated.metadata.finalizers = []
        try:
            client.update(updated)
        except Exception as exc:
            logger.error("failed to remove finalizer from the pod %s: %s", _qualified(pod), exc)
            errors.append(exc)
        else:
            removed.append(pod.metadata.name)

    result = RemoveFinalizersResult(
        message=f"Finalizers removed for pods: {','.join(removed)}",
        num_removed=len(removed),
    )
    if errors:
        raise PodOperationError(errors, result)
    return result


def get_pod_list(client: KubeClient, node: Node, filters: Iterable[PodPredicate]) -> list[Pod]:
    """List the pods scheduled on a node that satisfy every filter."""
    pods = client.list("Pod", field_selector={"spec.nodeName": node.metadata.name})
    return filter_pods(pods, *filters)