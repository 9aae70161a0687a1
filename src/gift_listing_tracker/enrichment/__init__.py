"""NFT metadata enrichment."""
