class BlockFeedError(Exception):
    pass


class ConfigError(BlockFeedError):
    pass


class DataSourceError(BlockFeedError):
    pass


class RateLimitError(DataSourceError):
    pass
