from recordanchor.proof.service import ProofService, VerificationResult, VerificationStatus

__all__ = ["ProofService", "VerificationResult", "VerificationStatus"]
