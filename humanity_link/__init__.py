"""HumanityLink: threshold attestations and wallet-linked confidential profiles."""
