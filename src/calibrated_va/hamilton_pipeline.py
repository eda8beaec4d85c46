"""
Hamilton-based VA calibration pipeline

This module wires the calibration processors into a Hamilton driver and
runs the requested outputs for a set of prediction records.
"""

from hamilton import driver
from typing import Any, Dict, List, Optional
import logging

import pandas as pd

from .config import CalibrationConfig

logger = logging.getLogger(__name__)

DEFAULT_OUTPUTS = ["csmf_summary", "misclassification_matrix", "calibrated_waic_result", "baseline_waic"]
TUNING_OUTPUTS = ["waic_table", "tuning_result"]


class CalibrationPipeline:
    """
    Hamilton-based VA calibration pipeline.

    This class builds the DAG from ``hamilton_processors`` and feeds it the
    flattened configuration plus the prediction records.
    """

    def __init__(self, *, config: CalibrationConfig):
        """
        Initialize the Hamilton pipeline.

        Args:
            config: Validated calibration configuration
        """
        self.config = config
        self.tuning_enabled = config.tuning is not None

        from . import hamilton_processors

        self.dr = driver.Builder().with_modules(hamilton_processors).build()
        logger.info("Initialized Hamilton calibration driver")

    def default_outputs(self) -> List[str]:
        outputs = list(DEFAULT_OUTPUTS)
        if self.tuning_enabled:
            outputs.extend(TUNING_OUTPUTS)
        return outputs

    def execute(
        self,
        va_unlabeled_sources: List[Any],
        va_labeled_sources: List[Any],
        gold_standard: pd.Series,
        outputs: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """
        Execute the pipeline.

        Args:
            va_unlabeled_sources: Target-set predictions, one entry per algorithm
            va_labeled_sources: Calibration-set predictions, one entry per algorithm
            gold_standard: True cause per calibration individual
            outputs: Node names to compute (defaults to the summary outputs,
                plus the WAIC table when tuning is configured)

        Returns:
            Dictionary mapping output names to results
        """
        outputs = outputs if outputs is not None else self.default_outputs()
        if not outputs:
            logger.warning("No outputs specified for execution")
            return {}

        inputs = self.config.to_hamilton_inputs()
        inputs.pop('output_dir', None)
        inputs['va_unlabeled_sources'] = list(va_unlabeled_sources)
        inputs['va_labeled_sources'] = list(va_labeled_sources)
        inputs['gold_standard'] = pd.Series(gold_standard).reset_index(drop=True)

        logger.info(f"Executing Hamilton pipeline with outputs: {outputs}")
        try:
            result = self.dr.execute(outputs, inputs=inputs)
        except Exception as e:
            logger.error(f"Pipeline failed: {str(e)}")
            raise
        logger.info("Pipeline completed successfully")
        return result
