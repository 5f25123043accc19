from .clipboard_service import ClipboardRelayService
from .pairing_service import PairingService
from .relay_service import RelayService

__all__ = ["ClipboardRelayService", "PairingService", "RelayService"]
