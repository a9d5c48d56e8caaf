"""Physical constants and default settings for feature correlation.

This module collects the physical constants, mass-calibration constants and
default matching tolerances used throughout featurecorr. Values for the mass
wavelength and the robust-regression cutoffs follow the peptide mass cluster
model of Wolski et al. (2006), "Calibration of mass spectrometric peptide
mass fingerprint data without specific external or internal calibrants",
BMC Bioinformatics 6:203.

Sources
-------
- NIST physical constants: https://physics.nist.gov/cgi-bin/cuu/Value
- Wolski et al. (2006): https://doi.org/10.1186/1471-2105-6-203
"""

# =============================================================================
# Fundamental Physical Constants (NIST values)
# =============================================================================

# Proton mass (NOT hydrogen atom mass!)
# Source: NIST 2018 CODATA
PROTON_MASS = 1.007276466622  # Da

# =============================================================================
# Mass Calibration (peptide mass cluster model)
# =============================================================================

# Spacing of peptide mass clusters, in Daltons
DEFAULT_THEORETICAL_MASS_WAVELENGTH = 1.000476

# Cluster centre of a peptide of nominal mass 0 (Wolski et al.). The library
# default is 0.0 so cluster centres sit at integer multiples of the wavelength.
PEPTIDE_MASS_DEFECT_INTERCEPT = 0.034
DEFAULT_MASS_DEFECT_INTERCEPT = 0.0

# Pairwise regression limits
DEFAULT_MAX_PAIRS_FOR_LEVERAGE_CALC = 500000
DEFAULT_MAX_LEVERAGE_NUMERATOR = 4.0
DEFAULT_MAX_STUDENTIZED_RESIDUAL = 2.3
MIN_PAIRS_FOR_REGRESSION = 3

# Mass defect deviation filter applied before fitting (ppm)
DEFAULT_MAX_DEVIATION_PPM = 200.0

# =============================================================================
# Matching Tolerances
# =============================================================================

DEFAULT_DELTA_MASS_PPM = 5.0
DEFAULT_DELTA_MASS_ABSOLUTE = 0.2  # Da
DEFAULT_DELTA_SCAN = 3
DEFAULT_DELTA_TIME = 20.0  # seconds
DEFAULT_DELTA_HYDROPHOBICITY = 0.05

# =============================================================================
# Offset (adduct) scanning
# =============================================================================

DEFAULT_MIN_RELATIVE_DALTONS = 0
DEFAULT_MAX_RELATIVE_DALTONS = 100
DEFAULT_OFFSET_DELTA_MASS_PPM = 10.0
DEFAULT_SCAN_WINDOW_SIZE = 1

# Relative retention time heatmap
DEFAULT_MIN_RELATIVE_SECONDS = -60
DEFAULT_MAX_RELATIVE_SECONDS = 60
DEFAULT_SECONDS_INCREMENT = 1
MIN_HEATMAP_MASS_DIFFERENCE = 0.5  # Da
