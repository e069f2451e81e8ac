from .ndr_controller import ndr_router

__all__ = ["ndr_router"]
