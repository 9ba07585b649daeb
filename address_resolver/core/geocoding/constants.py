"""Wire property keys and defaults used by the geocoders.

Key comparisons against service responses are case-insensitive.
"""

# Single-result property set and candidate record set keys
SHAPE_PROPERTY_KEY = "Shape"
SCORE_PROPERTY_KEY = "Score"
MATCHADDR_PROPERTY_KEY = "Match_addr"
LOCNAME_PROPERTY_KEY = "Loc_name"
ADDRTYPE_PROPERTY_KEY = "Addr_Type"

# Batch requests carry a synthetic sequential id; results echo it back
OBJECT_ID_PROPERTY_KEY = "OID"
RESULT_ID_PROPERTY_KEY = "ResultID"

# Locator metadata
BATCHSIZE_PROPERTY = "SuggestedBatchSize"
DEFAULT_BATCH_SIZE = 1000

# Reverse geocoding search tolerance
REVERSE_DISTANCE_PROPERTY = "ReverseDistance"
REVERSE_DISTANCE_UNITS_PROPERTY = "ReverseDistanceUnits"
REVERSE_DISTANCE = 500.0
REVERSE_DISTANCE_UNITS = "Meters"

# Property modifiers sent with every composite geocoder request
LOCATOR_PROPERTY_MODIFIERS = {
    "WritePercentAlongField": "TRUE",
    "MatchIfScoresTie": "TRUE",
}

# Scores
DEFAULT_MINIMUM_MATCH_SCORE = 80
MAXIMUM_SCORE = 100

# Geocoder kinds named in the service configuration
WORLD_GEOCODER_TYPE = "WorldGeocoder"
ARCGIS_GEOCODER_TYPE = "ArcGisGeocoder"
STREETS_GEOCODER_TYPE = "ArcGIS.Streets"

# Field title of the single-line world geocoder
WORLD_ADDRESS_FIELD_TITLE = "address"
