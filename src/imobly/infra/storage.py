"""Local file storage for boleto PDFs served under a public URL prefix."""

from pathlib import Path


class PdfStorage:
    """Writes files below root and maps them to public_base_url.

    Args:
        root: Directory served as public_base_url (e.g. storage/public).
        public_base_url: URL prefix for stored files (e.g. /storage).
    """

    def __init__(self, root: str, public_base_url: str) -> None:
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def put(self, relative_path: str, content: bytes) -> str:
        """Store content and return its public URL.

        Raises:
            ValueError: If relative_path escapes root.
            OSError: On write failure.
        """
        relative = relative_path.strip("/")
        target = (self.root / relative).resolve()
        if self.root.resolve() not in target.parents:
            raise ValueError(f"Path escapes storage root: {relative_path}")

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return f"{self.public_base_url}/{relative}"
