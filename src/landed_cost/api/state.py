"""
Shared engine instance for the API routers.
"""
from ..config.settings import get_settings
from ..engine import LandedCostEngine
from ..utils.logging import setup_logging

settings = get_settings()
setup_logging(settings.log_level)

engine = LandedCostEngine(settings)
