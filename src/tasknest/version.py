VERSION = "0.3.0"

# Version of the on-disk node table layout written by YamlNodeStore.
APP_SCHEMA_VERSION = "1.0.0"
