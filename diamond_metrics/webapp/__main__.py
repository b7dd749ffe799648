from __future__ import annotations

import os

from . import create_app

app = create_app()

if __name__ == "__main__":
    app.run(
        host="0.0.0.0",
        port=int(os.environ.get("PORT", 5001)),
        debug=bool(os.environ.get("FLASK_DEBUG")),
    )
