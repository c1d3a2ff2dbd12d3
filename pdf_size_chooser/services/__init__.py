"""Job orchestration, file handling and HTTP views."""
