"""
Text report for the distance sampling analysis.

The report is the only output written to disk.
"""

from pathlib import Path


def format_table(df, digits=4):
    """Render a DataFrame as fixed-width text without the index."""
    return df.to_string(index=False, float_format=lambda v: f"{v:.{digits}f}")


def save_analysis_report(output_path, prepared, comparison, failures, model, gof, estimates,
                         region_label=None):
    """
    Write the model comparison and density estimates to a text file.

    Parameters
    ----------
    output_path : str or Path
        Output file path for the report
    prepared : DataFrame
        Prepared survey table
    comparison : DataFrame
        Model summary table (see analysis.summarize_models)
    failures : dict
        Key functions that could not be fitted, with the reason
    model : DetectionFunction
        Selected detection function
    gof : dict
        Goodness of fit results for the selected model
    estimates : dict
        Output of DetectionFunction.estimate
    region_label : str, optional
        Study area name for the title

    Returns
    -------
    None
        Writes the report to output_path
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    title = region_label or ", ".join(str(r) for r in prepared["Region.Label"].unique())
    n_detections = int(prepared["distance"].notna().sum())

    with open(output_path, 'w') as f:
        f.write(f"Distance Sampling Analysis for {title}\n")
        f.write("="*80 + "\n\n")

        f.write("Survey data:\n")
        f.write(f"  Detections: {n_detections}\n")
        f.write(f"  Transects: {prepared['Sample.Label'].nunique()}\n")
        f.write(f"  Total effort: {prepared.groupby('Sample.Label')['Effort'].first().sum():.2f}\n")
        f.write(f"  Truncation distance: {model.truncation:.2f}\n\n")

        f.write("Model comparison:\n")
        f.write(format_table(comparison) + "\n\n")

        if failures:
            f.write("Models that could not be fitted:\n")
            for key, reason in failures.items():
                f.write(f"  {key}: {reason}\n")
            f.write("\n")

        f.write(f"Selected model: {model.label} ({model.description})\n")
        f.write(f"  AIC: {model.aic:.3f}\n")
        f.write(f"  Effective strip half-width: {model.esw:.3f} (se {model.se_esw:.3f})\n")
        f.write(f"  Average detection probability: {model.p_a:.4f} (se {model.se_p_a:.4f})\n\n")
        f.write(format_table(model.parameter_table()) + "\n\n")

        f.write("Goodness of fit:\n")
        if gof["chi2_df"] > 0:
            f.write(f"  Chi-square: {gof['chi2']:.4f}, df = {gof['chi2_df']}, p = {gof['chi2_p']:.4f}\n")
        else:
            f.write(f"  Chi-square: {gof['chi2']:.4f}, no degrees of freedom left\n")
        f.write(f"  Cramer-von Mises: W = {gof['cvm_statistic']:.4f}, p = {gof['cvm_p']:.4f}\n\n")

        f.write("Summary statistics:\n")
        f.write(format_table(estimates["summary"]) + "\n\n")

        f.write("Density estimates:\n")
        f.write(format_table(estimates["density"]) + "\n\n")

        f.write("Abundance estimates:\n")
        f.write(format_table(estimates["abundance"]) + "\n")

    print(f"Analysis report saved to {output_path}")
