"""实时日志推送"""
from .broadcaster import LogBroadcaster, broadcaster

__all__ = ["LogBroadcaster", "broadcaster"]
