"""FaceCapture: SCRFD face detection, alignment and capture-quality scoring."""
