"""**enums.py**

======  ============================================================================================
file    scintpll/utils/enums.py
brief   Kalman PLL configuration enumerations.
date    March 2025
======  ============================================================================================
"""

from enum import unique, IntEnum

# ================================================================================================ #

class _ConfigEnum(IntEnum):
    """
    Enumeration that can be parsed from its (case insensitive) configuration name.
    """

    def __str__(self):
        return str(self.name).lower()

    @classmethod
    def FromString(cls, name: str):
        """
        Parse a configuration string into the enumeration

        Parameters
        ----------
        name : str
            Configuration name (e.g. 'nwpr')

        Returns
        -------
        member
            Matching enumeration member

        Raises
        ------
        KeyError
            No member with the given name
        """
        return cls[str(name).strip().upper()]

@unique
class KalmanFilterType(_ConfigEnum):
    """
    Enumeration class for Kalman filter variants.
    """
    STANDARD  = 0
    EXTENDED  = 1
    UNSCENTED = 2
    CUBATURE  = 3

@unique
class AugmentationModel(_ConfigEnum):
    """
    Enumeration class for state-space augmentation model initializers.
    """
    NONE      = 0
    ARFIT     = 1
    ARYULE    = 2
    KINEMATIC = 3
    ARIMA     = 4
    RBF       = 5

# ================================================================================================ #

@unique
class MeasurementCovAdaptAlgorithm(_ConfigEnum):
    """
    Enumeration class for measurement noise covariance adaptation.
    """
    NONE = 0
    NWPR = 1

@unique
class StatesCovAdaptAlgorithm(_ConfigEnum):
    """
    Enumeration class for process noise covariance adaptation.
    """
    NONE     = 0
    MATCHING = 1

@unique
class MatchingMethod(_ConfigEnum):
    """
    Enumeration class for covariance matching solvers.
    """
    RAE = 0

@unique
class PllDiscriminator(_ConfigEnum):
    """
    Enumeration class for PLL phase discriminators.
    """
    ATAN2  = 0  # four quadrant, data-free signals
    COSTAS = 1  # two quadrant, insensitive to data bits
