"""
Configuration settings for the feed ranking engine
"""

# Candidate pool
CANDIDATE_MULTIPLIER = 3
RESURFACE_POOL_MULTIPLIER = 2
RECENT_VIEWS_WINDOW = 100

# Cold-start viewing pattern
DEFAULT_PREFERRED_HOUR = 12
DEFAULT_VIEW_DURATION = 30.0
DEFAULT_COMPLETION_RATE = 0.7

# Category weighting
DEFAULT_CATEGORY_WEIGHT = 0.5
AFFINITY_BASE = 0.5
AFFINITY_SPAN = 1.0
INTEREST_BOOST = 1.5

# Decay rates (per day) and time-of-day width (hours)
UNSEEN_DECAY_RATE = 0.05
RESURFACE_DECAY_RATE = 0.1
ENGAGEMENT_DECAY_RATE = 0.1
TIME_RELEVANCE_WIDTH_HOURS = 6

# Score weights: (category, recency, time relevance)
UNSEEN_WEIGHTS = (0.4, 0.3, 0.3)
RESURFACE_WEIGHTS = (0.3, 0.4, 0.2)

# Greedy selection
DIVERSITY_THRESHOLD = 0.3
DIVERSITY_BONUS = 1.2

# Re-surfacing jitter, uniform in [low, high)
JITTER_RANGE = (0.8, 1.2)
