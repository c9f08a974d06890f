"""
Script 01: Prepare Survey Data

Loads the raw line transect survey file and checks that it can be turned into
the table used for detection function fitting.

Workflow:
1. Load the raw survey file and verify its column layout
2. Convert sighting angles and radial distances to perpendicular distances
3. Rename columns, scale effort by the number of visits, attach the stratum
4. Print data checks

BEFORE RUNNING:
Place the survey file at data/raw/gpnp_line_transects.csv with columns:
date, transect, replicate, angle, radial_distance, group_size, transect_length

Then run: python scripts/02_estimate_density.py
"""

from distance_analysis import config
from distance_analysis.preprocessing import prepare_survey_data

print("="*80)
print("SCRIPT 01: Prepare Survey Data")
print("="*80)

print(f"\nStudy area: {config.REGION_LABEL} ({config.REGION_AREA} km²)")
print(f"Visits per transect: {config.VISIT_MULTIPLIER}")

if not config.RAW_SURVEY_FILE.exists():
    print(f"\nERROR: Survey file not found: {config.RAW_SURVEY_FILE}")
    exit(1)

print("\n" + "="*80)
print("STEP 1: Loading and Normalizing")
print("="*80)

survey_df = prepare_survey_data(config.RAW_SURVEY_FILE)

print("\n" + "="*80)
print("STEP 2: Data Checks")
print("="*80)

detections = survey_df[survey_df["distance"].notna()]

print("\nColumns:")
print(f"  {', '.join(survey_df.columns)}")

print("\nPerpendicular distances (m):")
print(f"  Min: {detections['distance'].min():.2f}")
print(f"  Median: {detections['distance'].median():.2f}")
print(f"  Max: {detections['distance'].max():.2f}")

print("\nCluster size:")
print(f"  Mean: {detections['size'].mean():.2f}")
print(f"  Max: {detections['size'].max()}")

print("\nDetections per transect:")
per_transect = detections.groupby("Sample.Label").size()
effort = survey_df.groupby("Sample.Label")["Effort"].first()
for label, length in effort.items():
    print(f"  {label}: {per_transect.get(label, 0)} detections, effort {length:.2f} km")

print("\n" + "="*80)
print("PREPARATION COMPLETE")
print("="*80)
print("\nNext step: python scripts/02_estimate_density.py")
print("="*80)
