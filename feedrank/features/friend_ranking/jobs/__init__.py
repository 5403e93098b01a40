"""
Job runners for the friend ranking feature.
"""

from .recompute_job import RankRecomputeJob, run_suggestion_expiry, start_rank_recompute_scheduler

__all__ = ["RankRecomputeJob", "start_rank_recompute_scheduler", "run_suggestion_expiry"]
