import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Tab(Enum):
    ANALYTICS = "Brand Exposure Analytics"
    CHAT = "CSV Chatbot"
    DASHBOARD = "Insights Dashboard"
    BEST_FRAME = "Best Frame Finder"


@dataclass
class SessionContext:
    """Per-browser-session state shared by every tab."""

    csv_text: Optional[str] = None
    csv_file_name: Optional[str] = None
    credential: str = ""

    @property
    def has_csv(self) -> bool:
        return bool(self.csv_text)

    @property
    def has_credential(self) -> bool:
        return bool(self.credential.strip())

    def fingerprint(self) -> str:
        # transcript resets when the file or the key changes
        digest = hashlib.sha1(f"{self.csv_text or ''}\0{self.credential}".encode("utf-8")).hexdigest()
        return f"{self.csv_file_name}|{digest}"
