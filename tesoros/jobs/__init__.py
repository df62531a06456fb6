from tesoros.jobs.stock_cleanup import StockCleanupScheduler

__all__ = ["StockCleanupScheduler"]
