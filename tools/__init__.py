# Operator tooling
