"""Document intelligence step agents.

4-step pipeline over one document:
  Step 1 - Extractor:  entity mentions + evidenced facts  (extract_entities)
  Step 2 - Resolver:   canonical entities + fact triples   (normalize_data)
  Step 3 - Critic:     contradiction / citation checks     (validate_facts)
  Step 4 - Arbiter:    ALLOW / WARN / BLOCK policy gate    (apply_policies)

The Orchestrator sequences them and owns persistence (no LLM calls).
"""
