DETECTION_CANDIDATE_LIMIT = 50

QUICK_WIN_MIN_POSITION = 11.0
QUICK_WIN_MAX_POSITION = 20.0
QUICK_WIN_MIN_IMPRESSIONS = 50
QUICK_WIN_POSITION_WEIGHT = 0.6
QUICK_WIN_IMPRESSION_WEIGHT = 0.4
QUICK_WIN_IMPRESSION_SATURATION = 1000

LOW_CTR_MAX_POSITION = 10.0
LOW_CTR_MIN_IMPRESSIONS = 100
LOW_CTR_BENCHMARK_RATIO = 0.7

DECLINING_MIN_POSITION_DROP = 3.0
DECLINING_SCORE_MULTIPLIER = 10.0
RECENT_WINDOW_DAYS = 7
OLDER_WINDOW_START_DAYS = 28
OLDER_WINDOW_END_DAYS = 8

CONTENT_GAP_MIN_POSITION = 20.0
CONTENT_GAP_MIN_IMPRESSIONS = 200
CONTENT_GAP_IMPRESSIONS_PER_POINT = 50.0

MAX_SCORE = 100.0
