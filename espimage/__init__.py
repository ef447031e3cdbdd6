"""ESP-IDF partition tables, ESP32/ESP8266 image headers, flashing helpers and errors."""

__version__ = "0.1.0"

__all__ = ["errors", "flashing", "partition_table", "image_format"]