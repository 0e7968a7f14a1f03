from storefront.analytics.aggregator import AnalyticsReport, AnalyticsService, Timeframe, build_report

__all__ = ['AnalyticsReport', 'AnalyticsService', 'Timeframe', 'build_report']
