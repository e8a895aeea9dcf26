from .kalman import KalmanFilter, FilterResult
