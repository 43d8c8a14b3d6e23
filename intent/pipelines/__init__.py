"""Resolution pipelines: input normalization and the intent resolver.

Each entry point (text, image, document, chat) runs the same
embed → rank → extract sequence and differs only in how the query text is
produced and which output schema the extractor requests.
"""
