"""NSHM Faults

The nshm_faults package converts legacy NSHMP fault source input files
into XML source models for hazard calculation.

Reading Input Files
-------------------

NSHMP input files have no explicit schema, and the length of most blocks
depends on values read earlier in the file. The `nshm_faults.parse_utils`
module provides a forward-only `LineCursor` and token readers used to
walk these files.

Magnitude Frequency Distributions
---------------------------------

The `nshm_faults.mfd` module represents the characteristic and
Gutenberg-Richter MFDs of fault sources, and builds them from input lines
(including moment balanced b = 0 branches). `nshm_faults.moment` has the
moment rate functions these rely on, and
`nshm_faults.magnitude_uncertainty` reads the magnitude uncertainty shared
by every source in a file.

Conversion
----------

`nshm_faults.fault_converter` parses a whole file into a
`FaultSourceSet`, merges sources that share a name, and writes the result
as XML. The `nshm-convert-faults` script converts files from the command
line."""
