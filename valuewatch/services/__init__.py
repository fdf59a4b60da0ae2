# Services package
from valuewatch.services.data_service import DataService
from valuewatch.services.engine import AnalyticsEngine
from valuewatch.services.normalizer import DataNormalizer, build_normalizer

__all__ = ["DataService", "AnalyticsEngine", "DataNormalizer", "build_normalizer"]
