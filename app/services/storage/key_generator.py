from uuid import UUID
import re


class KeyGenerator:
    @staticmethod
    def _safe_filename(filename: str) -> str:
        # Simple sanitization
        s = re.sub(r"[^a-zA-Z0-9_.-]", "_", filename)
        return s

    @staticmethod
    def generate_object_key(
        org_id: str, kind: str, asset_id: UUID, filename: str, owner_refs: dict[str, str]
    ) -> str:
        safe_filename = KeyGenerator._safe_filename(filename)
        document_type = (owner_refs.get("document_type") or "").lower()
        if not document_type:
            raise ValueError("document_type required for document keys")

        if kind == "person_document":
            person_id = owner_refs.get("owner_id")
            if not person_id:
                raise ValueError("owner_id required for person_document")
            return f"orgs/{org_id}/people/{person_id}/documents/{document_type}/{asset_id}/{safe_filename}"

        elif kind == "identification_document":
            identification_id = owner_refs.get("owner_id")
            if not identification_id:
                raise ValueError("owner_id required for identification_document")
            return (
                f"orgs/{org_id}/identifications/{identification_id}/documents/"
                f"{document_type}/{asset_id}/{safe_filename}"
            )

        else:
            raise ValueError(f"Unknown asset kind: {kind}")
