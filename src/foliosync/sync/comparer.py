"""Plan a bulk download by comparing remote entries with local elements."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from foliosync.models.elements import Element
from foliosync.models.elements import ElementRef
from foliosync.models.sync import RemoteListingEntry
from foliosync.models.sync import SyncMode
from foliosync.portfolio.frontmatter import git_blob_sha
from foliosync.portfolio.frontmatter import serialize_element


class PlannedAction(str, Enum):
    download = "download"
    skip_identical = "skip_identical"
    keep_local = "keep_local"
    delete_local = "delete_local"


@dataclass(frozen=True)
class PlanItem:
    ref: ElementRef
    action: PlannedAction
    remote: RemoteListingEntry | None = None
    local: Element | None = None


def local_blob_sha(element: Element) -> str:
    return git_blob_sha(serialize_element(element))


def plan_download(
    remote: list[RemoteListingEntry],
    local: list[Element],
    mode: SyncMode,
) -> list[PlanItem]:
    """Decide what happens to every element on either side.

    * remote only: download in every mode
    * both, same blob sha: skip
    * both, different: ``additive`` keeps the local copy, the others download
    * local only: ``mirror`` deletes it unless it is marked local-only
    """
    local_by_key = {(e.type, e.slug): e for e in local}
    plan: list[PlanItem] = []
    seen: set[tuple] = set()

    for entry in sorted(remote, key=lambda e: (e.element_type.value, e.slug)):
        key = (entry.element_type, entry.slug)
        seen.add(key)
        ref = ElementRef(type=entry.element_type, slug=entry.slug)
        existing = local_by_key.get(key)
        if existing is None:
            action = PlannedAction.download
        elif local_blob_sha(existing) == entry.sha:
            action = PlannedAction.skip_identical
        elif mode is SyncMode.additive:
            action = PlannedAction.keep_local
        else:
            action = PlannedAction.download
        plan.append(PlanItem(ref=ref, action=action, remote=entry, local=existing))

    if mode is SyncMode.mirror:
        for element in sorted(local, key=lambda e: (e.type.value, e.slug)):
            key = (element.type, element.slug)
            if key in seen or element.local_only:
                continue
            plan.append(PlanItem(ref=element.ref, action=PlannedAction.delete_local, local=element))
    return plan
