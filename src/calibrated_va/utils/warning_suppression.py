"""
Warning suppression utilities for the VA calibration package.
"""

import warnings
import logging

def suppress_upstream_warnings():
    """
    Suppress common upstream warnings that clutter the output.

    ConvergenceWarning is raised from this package and is left untouched.
    """
    # Suppress pandas warnings
    warnings.filterwarnings('ignore', category=FutureWarning, module='pandas')

    # Suppress hamilton warnings
    warnings.filterwarnings('ignore', category=UserWarning, module='hamilton')
    warnings.filterwarnings('ignore', category=FutureWarning, module='hamilton')

    # Suppress pandera warnings
    warnings.filterwarnings('ignore', category=FutureWarning, module='pandera')

    # Set logging level to reduce verbosity
    logging.getLogger('hamilton').setLevel(logging.WARNING)
