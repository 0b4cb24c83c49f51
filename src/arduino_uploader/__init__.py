"""
Arduino Uploader - flash firmware through native serial bootloaders

Drives the SAM-BA/BOSSA (Renesas, SAMD, mbed) and ESP ROM (ESP32, ESP8266)
bootloader protocols directly, without vendor flashing tools.
"""

__version__ = "0.1.0"

from arduino_uploader.protocol import SerialTransport
from arduino_uploader.upload_manager import UploadManager, upload_firmware

__all__ = [
    "SerialTransport",
    "UploadManager",
    "upload_firmware",
    "__version__",
]
