"""Song analysis — difficulty estimation for imported melodies."""

from keystep.analysis.difficulty import DifficultyFactors, DifficultyReport, estimate

__all__ = ["DifficultyFactors", "DifficultyReport", "estimate"]
