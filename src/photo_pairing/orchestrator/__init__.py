from .pairing import PhotoPairingOrchestrator

__all__ = ["PhotoPairingOrchestrator"]
