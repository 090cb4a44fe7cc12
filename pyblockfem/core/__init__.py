from .blockedrange import BlockedRange
from .blockarray import BlockCellArray, BlockBuilder
from .trial import TrialView, as_trial
__all__=['BlockedRange','BlockCellArray','BlockBuilder','TrialView','as_trial']
