# sdm_ensemble/__init__.py

from sdm_ensemble.core.grid import ReferenceGrid, cell_of, OUT_OF_BOUNDS
from sdm_ensemble.core.points import GeoPoint, PointSet, PointSource
from sdm_ensemble.core.rarefaction import rarefy
from sdm_ensemble.core.spatial import Ecoregion, WithinBufferOf, WithinPolygonSet
from sdm_ensemble.core.sampling import sample, sample_background, sample_pseudoabsence
from sdm_ensemble.core.evaluation import Criterion, EvaluationRecord, evaluate, select_threshold
from sdm_ensemble.core.ensemble import EnsembleRaster, ModelOutput, SuitabilityRaster, combine
from sdm_ensemble.config import SDMConfig, load_config
from sdm_ensemble.sdm import EnsembleSDM

__version__ = "0.1.0"
