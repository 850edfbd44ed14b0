from abc import ABC, abstractmethod

class PaymentProvider(ABC):
    @abstractmethod
    def initiate(self, phone, amount, branch=None, product=None):
        raise NotImplementedError

    @abstractmethod
    def query(self, reference, merchant_request_id=None):
        raise NotImplementedError
