from .counting_pipeline import CountingPipeline
