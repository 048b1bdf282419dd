"""AOVault - AO3 同人作品收藏与离线阅读服务."""

__version__ = "0.1.0"
