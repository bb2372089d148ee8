"""AMLChain declaration service: FastAPI surface over the amlchain protocol core."""
