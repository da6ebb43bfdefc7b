"""**constants.py**

======  ============================================================================================
file    scintpll/utils/constants.py
brief   Carrier tracking and C/N0 estimation constants.
date    March 2025
refs    1. "IS-GPS-200N", 2022
        2. "Understanding GPS/GNSS Principles and Applications", 3rd Edition, 2017
            - Kaplan & Hegarty
======  ============================================================================================
"""

# ===== GENERIC ================================================================================== #
PI          = 3.1415926535898 # GPS defined pi constant
TWO_PI      = PI * 2.0        #

# ===== NWPR C/N0 ESTIMATION ===================================================================== #
NWPR_MIN_CN0_DBHZ = 0.0    # lower clamp of the NWPR C/N0 estimate [dB-Hz]
NWPR_MAX_CN0_DBHZ = 100.0  # upper clamp of the NWPR C/N0 estimate [dB-Hz]

# ===== KALMAN FILTER ============================================================================ #
MAX_INNOVATION_CONDITION = 1e12   # innovation covariance condition number flagged as degenerate
PSD_TOLERANCE            = 1e-9   # relative eigenvalue tolerance for positive semi-definiteness
SAMPLING_INTERVAL_TOL    = 1e-10  # allowed mismatch between sampling intervals [s]
