from .lottery import LotteryGame, LotteryBin, LotteryPack, ReturnedPack
from .closing import ClosingSession, ClosingLine, VarianceApprovalRecord

__all__ = [
    'LotteryGame', 'LotteryBin', 'LotteryPack', 'ReturnedPack',
    'ClosingSession', 'ClosingLine', 'VarianceApprovalRecord',
]
