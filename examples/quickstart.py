"""
arpreview Quick Start Example

Converts the demo model for iOS AR Quick Look, then serves the demo over
HTTPS so it can be opened on a phone.
"""

from arpreview import convert, create_server
from arpreview.config import ConversionSettings, ServerSettings

print("Converting model for AR Quick Look...")
result = convert(
    "public/assets/models/model.glb",
    "public/assets/models/model.usdz",
    ConversionSettings(max_texture_size=2048),
)
print(f"✅ Saved to {result.output_path} ({result.size_mb:.2f} MB)")

server = create_server(ServerSettings(directory="public"))
for line in server.banner():
    print(line)

try:
    server.serve_forever()
except KeyboardInterrupt:
    print("\nServer stopped")
finally:
    server.httpd.server_close()
