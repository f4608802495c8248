"""
telecom-rag: retrieval-augmented question answering over the front office
document base (query refinement, hybrid reranking, similarity cache).
"""
