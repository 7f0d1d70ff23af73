"""
Asset access policy.

Callers only ever see assets of their own organization. Within it:
- the uploader and organization admins may do anything
- organization-level assets are open to every member
- public assets are viewable (not downloadable or editable) by members
- private assets are the uploader's alone

Finalizing an upload is reserved to its uploader (or an admin).
"""
from assetvault.lib.security import Caller
from assetvault.services.lifecycle import AccessLevel, AssetSnapshot


class AccessPolicy:
    def _privileged(self, asset: AssetSnapshot, caller: Caller) -> bool:
        if asset.organization_id != caller.organization_id:
            return False
        return asset.uploaded_by == caller.user_id or caller.is_org_admin

    def _allowed(self, asset: AssetSnapshot, caller: Caller, action: str) -> bool:
        if asset.organization_id != caller.organization_id:
            return False
        if self._privileged(asset, caller):
            return True
        if asset.access == AccessLevel.ORGANIZATION:
            return True
        if asset.access == AccessLevel.PUBLIC and action == "view":
            return True
        return False

    def can_view(self, asset: AssetSnapshot, caller: Caller) -> bool:
        return self._allowed(asset, caller, "view")

    def can_download(self, asset: AssetSnapshot, caller: Caller) -> bool:
        return self._allowed(asset, caller, "download")

    def can_edit_metadata(self, asset: AssetSnapshot, caller: Caller) -> bool:
        return self._allowed(asset, caller, "edit")

    def can_delete(self, asset: AssetSnapshot, caller: Caller) -> bool:
        return self._allowed(asset, caller, "delete")

    def can_finalize(self, asset: AssetSnapshot, caller: Caller) -> bool:
        return self._privileged(asset, caller)
