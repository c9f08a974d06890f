"""
Script 02: Estimate Density

Fits detection functions to the prepared survey data, selects a model by AIC
and estimates density and abundance for the study area.

Workflow:
1. Prepare survey data (see script 01)
2. Fit each key function, adding adjustment terms while AIC improves
3. Compare candidates by AIC and check goodness of fit
4. Estimate density and abundance with confidence intervals
5. Write the text report

OUTPUT:
- results/gpnp_density_report.txt
"""

from distance_analysis import config
from distance_analysis.preprocessing import prepare_survey_data
from distance_analysis.detection import fit_candidates
from distance_analysis.analysis import (
    NoViableModelError,
    select_model,
    goodness_of_fit,
    summarize_models
)
from distance_analysis.reporting import format_table, save_analysis_report

print("="*80)
print("SCRIPT 02: Estimate Density")
print("="*80)

print(f"\nKey functions: {', '.join(config.KEY_FUNCTIONS)}")
print(f"Adjustment series: {config.ADJUSTMENT} (up to {config.MAX_ADJUSTMENTS} terms)")

if not config.RAW_SURVEY_FILE.exists():
    print(f"\nERROR: Survey file not found: {config.RAW_SURVEY_FILE}")
    print("Please run script 01_prepare_survey_data.py first")
    exit(1)

# Step 1: Prepare data
print("\n" + "="*80)
print("STEP 1: Preparing Survey Data")
print("="*80)

survey_df = prepare_survey_data(config.RAW_SURVEY_FILE)

# Step 2: Fit detection functions
print("\n" + "="*80)
print("STEP 2: Fitting Detection Functions")
print("="*80)

models, failures = fit_candidates(survey_df)

# Step 3: Model selection
print("\n" + "="*80)
print("STEP 3: Model Selection")
print("="*80)

try:
    best_model, _ = select_model(models)
except NoViableModelError as e:
    print(f"\nERROR: {e}")
    for key, reason in failures.items():
        print(f"  {key}: {reason}")
    exit(1)

comparison = summarize_models(models)
print(format_table(comparison))
print(f"\nSelected model: {best_model.label}")

gof = goodness_of_fit(best_model)
print(f"  Cramer-von Mises p = {gof['cvm_p']:.4f}")
if gof["chi2_df"] > 0:
    print(f"  Chi-square p = {gof['chi2_p']:.4f} (df = {gof['chi2_df']})")

# Step 4: Density and abundance
print("\n" + "="*80)
print("STEP 4: Density and Abundance")
print("="*80)

estimates = best_model.estimate(survey_df, convert_units=config.CONVERT_UNITS,
                                ci_level=config.CI_LEVEL)

print("\nDensity (per km²):")
print(format_table(estimates["density"]))
print("\nAbundance:")
print(format_table(estimates["abundance"]))

# Step 5: Report
print("\n" + "="*80)
print("STEP 5: Saving Report")
print("="*80)

save_analysis_report(config.REPORT_FILE, survey_df, comparison, failures, best_model, gof,
                     estimates, region_label=config.REGION_LABEL)

print("\n" + "="*80)
print("ANALYSIS COMPLETE")
print("="*80)
print(f"Report: {config.REPORT_FILE}")
print("="*80)
