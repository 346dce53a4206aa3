ENV_KEY = "CFREC_ENV"

INPUT_KEY = "input"
LABEL_KEY = "labels"
PREDICTIONS_KEY = "predictions"

CONFIG_KEY = "config"
STATES_KEY = "states"

DEFAULT_LABEL_COLUMN = "label"
DEFAULT_NUM_CLASSES = 2
DEFAULT_HIDDEN_LAYERS = (40, 20, 10)
DEFAULT_EMBEDDING_STD = 0.1
DEFAULT_PREDICT_BATCH_SIZE = 1024

SUPPORTED_DTYPES = ("float32", "float64")
