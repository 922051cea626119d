"""Evolution orchestration and safeguards."""
