"""
Survival Disparity

Bayesian estimate of the Black-White gap in predicted 2-year survival
across a city-level policy index, fit to multiply-imputed person records.

Core modules:
    - config: Typed analysis configuration from configs/params.yml
    - intake: Validated person records
    - simulate: Demonstration cohort
    - imputation: Multiple imputation by chained equations
    - model: Pooled Bayesian hierarchical logistic regression
    - prediction: Counterfactual posterior draws over the policy grid
    - disparity: Paired differences and credible intervals
    - pipeline: End-to-end run and output writing
    - paths, logging_utils, io_utils, schemas, qa, hashing: Support
"""

__version__ = "0.1.0"
__author__ = "Survival Disparity Analysis Team"
