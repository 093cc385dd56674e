from stereotrack.match.associate import associate, greedy_assign, score_candidates
from stereotrack.match.triangulate import MatchResult, reconstruct_path, triangulate_match, triangulate_pair

__all__ = [
    "MatchResult",
    "associate",
    "greedy_assign",
    "reconstruct_path",
    "score_candidates",
    "triangulate_match",
    "triangulate_pair",
]
